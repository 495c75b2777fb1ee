import logging
from datetime import date

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from sitecontrol import config
from sitecontrol.access import ADMIN, DEFAULT_POLICY, role_description
from sitecontrol.analysis import (
    FILTERS,
    AnalysisBusyError,
    AnalysisError,
    GeminiGenerator,
    ScheduleAnalyzer,
)
from sitecontrol.classification import (
    NO_DATA,
    band_table,
    operations_summary,
    procurement_summary,
    project_progress,
)
from sitecontrol.datemath import parse_date
from sitecontrol.export import export_csv, export_frame, format_variance
from sitecontrol.logging_config import configure_logging
from sitecontrol.models import OPERATIONS, PROCUREMENT, STAGES, UNCATEGORIZED, get_kind, stage_label
from sitecontrol.store import JsonFileStorage, RecordStore
from sitecontrol.tables import apply_grid_edits, build_table, column_labels, group_by_stage
from sitecontrol.users import USERS, find_user

configure_logging()
logger = logging.getLogger("sitecontrol.app")

# ─────────────────────────────────────────────────────────────────────────────
#  PAGE CONFIG
# ─────────────────────────────────────────────────────────────────────────────
st.set_page_config(
    page_title="Site Control · Procurement & Operations",
    page_icon="🏗️",
    layout="wide",
    initial_sidebar_state="expanded",
)

LOCALE = config.LOCALE
POLICY = DEFAULT_POLICY

LIGHTS = {
    "normal": "🟢",
    "warning": "🟡",
    "minor_delay": "🟡",
    "escalate_site": "🟠",
    "delay": "🟠",
    "escalate_management": "🔴",
    "critical_delay": "🔴",
    NO_DATA.key: "⚪",
}

GRID_COLUMNS = {
    PROCUREMENT: [
        "engineering_item", "scheduled_request_date", "actual_request_date",
        "variance", "status", "site_organizer", "procurement_organizer",
        "return_date", "return_reason", "resubmission_date",
        "contractor_confirm_date", "contractor_name", "remarks", "date_issues",
    ],
    OPERATIONS: [
        "category", "item", "scheduled_start_date", "scheduled_end_date",
        "scheduled_duration", "actual_start_date", "actual_end_date",
        "actual_duration", "variance", "status", "progress", "remarks", "date_issues",
    ],
}

FILTER_LABELS = {
    "late": "Late items",
    "recent": "Finished in the last 30 days",
    "upcoming": "Due in the next 30 days",
}

# ─────────────────────────────────────────────────────────────────────────────
#  SESSION STATE
# ─────────────────────────────────────────────────────────────────────────────
if "store" not in st.session_state:
    st.session_state.store = RecordStore(JsonFileStorage())
if "analyzer" not in st.session_state:
    st.session_state.analyzer = ScheduleAnalyzer(GeminiGenerator())


def get_store():
    return st.session_state.store


def current_user():
    return st.session_state.get("user")


def current_project():
    pid = st.session_state.get("project_id")
    return get_store().get_project(pid) if pid else None


def pick_project():
    st.session_state.project_id = st.session_state.project_picker


def after_mutation(message=None):
    """
    Surface a failed snapshot write, otherwise rerun to show the new state.

    ``message`` survives the rerun in session state and is shown once.
    """
    store = get_store()
    if store.last_write_error:
        st.error(f"⚠️ Could not save the {store.last_write_error} data to disk. "
                 f"Your change is kept for this session only.")
        if message:
            st.success(message)
    else:
        if message:
            st.session_state.flash = message
        st.rerun()


# ─────────────────────────────────────────────────────────────────────────────
#  TABLE HELPERS  (shared by Procurement + Operations)
# ─────────────────────────────────────────────────────────────────────────────
def grid_frame(kind, records):
    df = build_table(kind, records, locale=LOCALE)
    df["status"] = df["status_key"].map(LIGHTS).fillna("") + " " + df["status"]
    df["variance"] = df["variance"].map(lambda v: format_variance(None if pd.isna(v) else int(v)))
    df["date_issues"] = df["date_issues"].map(lambda s: f"⚠ {s}" if s else "")
    for col in ("scheduled_duration", "actual_duration"):
        if col in df.columns:
            df[col] = df[col].map(lambda v: "" if pd.isna(v) else str(int(v)))
    return df.set_index("id")


def render_grid(kind, records, role, key):
    """
    Editable grid for one partition. Columns the role may not edit are
    locked; every changed cell still goes through ``store.update``.
    """
    spec = get_kind(kind)
    df = grid_frame(kind, records)
    labels = column_labels(kind, LOCALE)
    editable = POLICY.editable_fields(role, kind)
    shown = GRID_COLUMNS[spec.name]

    column_config = {}
    for col in shown:
        label = labels.get(col, col)
        if col in editable and col not in spec.date_fields:
            label = f"✏️ {label}"
        if col == "category":
            column_config[col] = st.column_config.SelectboxColumn(
                label, options=["", *STAGES],
                help=" / ".join(stage_label(s, LOCALE) for s in STAGES),
            )
        elif col == "progress":
            column_config[col] = st.column_config.ProgressColumn(
                label, min_value=0, max_value=100, format="%d%%"
            )
        elif col in spec.date_fields:
            column_config[col] = st.column_config.TextColumn(
                f"📅 {label}" if col in editable else label, max_chars=10, help="YYYY-MM-DD"
            )
        else:
            column_config[col] = st.column_config.TextColumn(label)

    # editor state holds positional deltas; a new key after each write drops them
    version = st.session_state.setdefault("grid_version", 0)
    before = df[shown]
    edited = st.data_editor(
        before,
        key=f"{key}_v{version}",
        disabled=[c for c in shown if c not in editable],
        column_config=column_config,
        hide_index=True,
        num_rows="fixed",
        use_container_width=True,
    )
    if apply_grid_edits(get_store(), kind, role, before, edited):
        st.session_state.grid_version = version + 1
        after_mutation()

    bad = df[df["date_issues"] != ""]
    if not bad.empty:
        st.warning(
            f"{len(bad)} row(s) contain dates that are not YYYY-MM-DD. "
            f"They are kept as typed but ignored in variance and progress."
        )


def record_title(kind, record):
    spec = get_kind(kind)
    return record.get(spec.title_field) or f"(untitled {record['id'][:8]})"


def render_date_picker(kind, records, role, key):
    """Calendar entry for a single date cell, as an alternative to typing."""
    spec = get_kind(kind)
    editable_dates = [f for f in spec.date_fields if POLICY.can_edit_field(role, f, kind)]
    if not records or not editable_dates:
        return
    labels = column_labels(kind, LOCALE)
    with st.expander("📅 Pick a date from the calendar"):
        options = {f"{i+1}. {record_title(kind, r)}": r for i, r in enumerate(records)}
        c1, c2, c3, c4 = st.columns([3, 2, 2, 1])
        with c1:
            chosen = st.selectbox("Item", list(options.keys()), key=f"{key}_row")
        with c2:
            field = st.selectbox("Field", editable_dates, format_func=lambda f: labels.get(f, f), key=f"{key}_field")
        record = options[chosen]
        with c3:
            picked = st.date_input("Date", value=parse_date(record.get(field)) or date.today(), key=f"{key}_date")
        with c4:
            st.markdown("")
            if st.button("Set", key=f"{key}_set", use_container_width=True):
                if get_store().update(kind, record["id"], field, picked, role):
                    after_mutation()
        if record.get(field) and st.button("Clear this date", key=f"{key}_clear"):
            if get_store().update(kind, record["id"], field, "", role):
                after_mutation()


def render_delete_panel(kind, records, role, key):
    if not POLICY.can_delete_record(role) or not records:
        return
    with st.expander("🗑️ Delete an item"):
        options = {f"{i+1}. {record_title(kind, r)}": r for i, r in enumerate(records)}
        chosen = st.selectbox("Item to delete", list(options.keys()), key=f"{key}_del_row")
        confirm = st.checkbox("Yes, delete this item. This cannot be undone.", key=f"{key}_del_confirm")
        if st.button("🗑️ Delete", key=f"{key}_del_btn", type="secondary", disabled=not confirm):
            if get_store().delete(kind, options[chosen]["id"], role):
                st.session_state.pop(f"{key}_del_confirm", None)
                after_mutation()


def render_reset_panel(kind, project, role):
    if not POLICY.can_reset_project(role):
        return
    st.markdown("---")
    with st.expander("☢️ Reset this project's data"):
        st.error(f"Deletes every {get_kind(kind).name} item of **{project['name']}**. "
                 f"Other projects are not touched. Cannot be undone.")
        typed = st.text_input("Type the project name to confirm:", key=f"reset_{kind}_confirm")
        if st.button("☢️ Reset", type="secondary", key=f"reset_{kind}_btn"):
            if typed.strip() == project["name"]:
                removed = get_store().reset_project(project["id"], role, kind=kind)
                after_mutation(f"Removed {removed} item(s).")
            else:
                st.error("Project name does not match.")


def band_donut(kind, counts):
    table = band_table(kind)
    bands = [b for b in table if counts.get(b.key)]
    if counts.get(NO_DATA.key):
        bands.append(NO_DATA)
    if not bands:
        return None
    fig = go.Figure(go.Pie(
        labels=[b.label(LOCALE) for b in bands],
        values=[counts[b.key] for b in bands],
        hole=0.55,
        marker=dict(colors=[b.color for b in bands]),
        textinfo="label+value",
    ))
    fig.update_layout(
        paper_bgcolor="#0e1117", font={"color": "#a0aec0"},
        height=240, showlegend=False, margin=dict(l=0, r=0, t=10, b=0),
    )
    return fig


# ─────────────────────────────────────────────────────────────────────────────
#  CUSTOM CSS
# ─────────────────────────────────────────────────────────────────────────────
st.markdown("""
<style>
    [data-testid="stAppViewContainer"] { background-color: #0e1117; }
    .status-badge {
        display: inline-block; padding: 4px 14px; border-radius: 20px;
        font-weight: 700; font-size: 0.85rem; margin-right: 6px;
    }
    .section-header {
        color: #63b3ed; font-size: 0.9rem; font-weight: 700;
        text-transform: uppercase; letter-spacing: 2px;
        border-bottom: 1px solid #2d3561;
        padding-bottom: 6px; margin: 20px 0 12px 0;
    }
    div[data-testid="stMetricValue"] { color: #ffffff; }
    .timeline-bar-bg {
        background: #1a1f2e; border-radius: 8px; height: 18px;
        width: 100%; overflow: hidden; margin-top: 4px;
    }
</style>
""", unsafe_allow_html=True)

# ─────────────────────────────────────────────────────────────────────────────
#  LOGIN
# ─────────────────────────────────────────────────────────────────────────────
user = current_user()
if user is None:
    st.markdown("# 🏗️ Site Control")
    st.caption("Construction procurement tracking, delay analysis and schedule control")
    _, mid, _ = st.columns([1, 2, 1])
    with mid:
        with st.form("login"):
            username = st.text_input("Username")
            st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign in", use_container_width=True, type="primary")
        if submitted:
            found = find_user(username)
            if found:
                st.session_state.user = found
                logger.info("%s signed in as %s", found["username"], found["role"])
                st.rerun()
            else:
                st.error("Unknown username, please check and try again.")
        st.markdown("**Demo accounts**")
        st.dataframe(
            pd.DataFrame([{
                "Username": u["username"], "Name": u["name"],
                "Role": role_description(u["role"], LOCALE),
            } for u in USERS]),
            hide_index=True, use_container_width=True,
        )
    st.stop()

role = user["role"]
store = get_store()

# ─────────────────────────────────────────────────────────────────────────────
#  SIDEBAR
# ─────────────────────────────────────────────────────────────────────────────
with st.sidebar:
    st.markdown("## 🏗️ Site Control")
    st.markdown(f"**{user['name']}**  \n{role_description(role, LOCALE)}")
    st.markdown("---")

    projects = store.list_projects()
    if projects:
        ids = [p["id"] for p in projects]
        if st.session_state.get("project_id") not in ids:
            st.session_state.project_id = ids[0]
        st.session_state.project_picker = st.session_state.project_id
        st.selectbox(
            "Current project", ids,
            format_func=lambda pid: store.get_project(pid)["name"],
            key="project_picker",
            on_change=pick_project,
        )
    else:
        st.session_state.pop("project_id", None)

    page = st.radio(
        "Navigation",
        ["📁 Projects", "📦 Procurement", "🏗️ Operations", "📤 Export Report", "🤖 Schedule Analysis"],
        label_visibility="collapsed",
    )
    st.markdown("---")
    if st.button("🚪 Sign out", use_container_width=True):
        for k in ("user", "analysis_result"):
            st.session_state.pop(k, None)
        st.rerun()
    st.markdown("""
    <div style='font-size:0.75rem; color:#718096;'>
    <b>Variance</b> = scheduled − actual (days)<br>
    Negative means late.<br><br>
    <b>Procurement lights</b><br>
    🟢 on time · 🟡 1-7 late · 🟠 8-30 late · 🔴 31+ late<br><br>
    <b>Operations lights</b><br>
    🟢 on time · 🟡 1-10 late · 🟠 11-29 late · 🔴 30+ late
    </div>
    """, unsafe_allow_html=True)

flash = st.session_state.pop("flash", None)
if flash:
    st.success(flash)

project = current_project()
if page != "📁 Projects" and project is None:
    st.info("No project selected. Create one on the **📁 Projects** page.")
    st.stop()

# ─────────────────────────────────────────────────────────────────────────────
#  PAGE: PROJECTS
# ─────────────────────────────────────────────────────────────────────────────
if page == "📁 Projects":
    st.markdown("# 📁 Projects")
    projects = store.list_projects()

    if projects:
        progress = [project_progress(store.list_by_project(OPERATIONS, p["id"])) for p in projects]
        c1, c2, c3 = st.columns(3)
        c1.metric("Projects", len(projects))
        c2.metric("Procurement items", sum(len(store.list_by_project(PROCUREMENT, p["id"])) for p in projects))
        c3.metric("Avg overall progress", f"{np.mean(progress):.0f}%")
        st.markdown('<p class="section-header">All Projects</p>', unsafe_allow_html=True)

        for p, pct in zip(projects, progress):
            proc = procurement_summary(store.list_by_project(PROCUREMENT, p["id"]))
            r1, r2, r3, r4 = st.columns([3, 1.5, 1.5, 1])
            with r1:
                mark = "📌 " if project and p["id"] == project["id"] else ""
                st.markdown(f"**{mark}{p['name']}**")
                st.caption(f"Created {p['created_at'][:10]}")
            with r2:
                st.markdown(f"📦 {proc['total']} items · ⏰ {proc['delayed']} late")
            with r3:
                st.markdown(
                    f'<div class="timeline-bar-bg">'
                    f'<div style="background:#00CC66;width:{pct}%;height:100%;border-radius:8px;"></div>'
                    f'</div>',
                    unsafe_allow_html=True,
                )
                st.caption(f"Overall progress {pct}%")
            with r4:
                if st.button("Open", key=f"open_{p['id']}", use_container_width=True):
                    st.session_state.project_id = p["id"]
                    st.rerun()
    else:
        st.info("No projects yet.")

    if POLICY.can_manage_projects(role):
        st.markdown('<p class="section-header">New Project</p>', unsafe_allow_html=True)
        with st.form("new_project", clear_on_submit=True):
            name = st.text_input("Project name", placeholder="e.g. Wanhua Zhixing / Banqiao Fuzhong")
            if st.form_submit_button("➕ Create & open", type="primary"):
                created = store.create_project(name, role)
                if created:
                    st.session_state.project_id = created["id"]
                    after_mutation()
                else:
                    st.error("Please enter a project name.")

        if project:
            st.markdown('<p class="section-header">Rename Current Project</p>', unsafe_allow_html=True)
            new_name = st.text_input("New name", value=project["name"], key=f"rename_{project['id']}")
            if st.button("💾 Save name"):
                if store.rename_project(project["id"], new_name, role):
                    after_mutation()

    if project and POLICY.can_delete_project(role):
        st.markdown("---")
        with st.expander("⚠️ Danger Zone"):
            st.warning(f"Deleting **{project['name']}** also deletes all of its procurement "
                       f"and operations items. Cannot be undone.")
            confirm_name = st.text_input("Type the project name to confirm:", key="confirm_delete_project")
            if st.button("🗑️ Delete This Project", type="secondary"):
                if confirm_name.strip() == project["name"]:
                    store.delete_project(project["id"], role)
                    st.session_state.pop("project_id", None)
                    after_mutation(f"Project {project['name']} deleted.")
                else:
                    st.error("Name does not match.")

# ─────────────────────────────────────────────────────────────────────────────
#  PAGE: PROCUREMENT
# ─────────────────────────────────────────────────────────────────────────────
elif page == "📦 Procurement":
    st.markdown(f"# 📦 Procurement Schedule · {project['name']}")
    records = store.list_by_project(PROCUREMENT, project["id"])
    summary = procurement_summary(records)

    col_m, col_chart = st.columns([2, 1])
    with col_m:
        m1, m2 = st.columns(2)
        m1.metric("Total items", summary["total"])
        m2.metric("Requests raised", summary["completed"])
        m3, m4 = st.columns(2)
        m3.metric("Delayed", summary["delayed"], delta="Needs follow-up" if summary["delayed"] else "All clear",
                  delta_color="inverse" if summary["delayed"] else "normal")
        m4.metric(f"Due in {config.UPCOMING_WINDOW_DAYS} days", summary["upcoming"])
    with col_chart:
        fig = band_donut(PROCUREMENT, summary["bands"])
        if fig is not None:
            st.plotly_chart(fig, use_container_width=True)

    locked = sorted(set(get_kind(PROCUREMENT).fields) - POLICY.editable_fields(role, PROCUREMENT))
    if locked and role != ADMIN:
        st.caption("🔒 Read-only for your role: " + ", ".join(column_labels(PROCUREMENT, LOCALE)[f] for f in locked))

    if POLICY.can_add_record(role):
        if st.button("➕ Add item", type="primary"):
            store.create(PROCUREMENT, project["id"], role)
            after_mutation()

    st.markdown('<p class="section-header">Procurement Items</p>', unsafe_allow_html=True)
    if records:
        render_grid(PROCUREMENT, records, role, key=f"grid_proc_{project['id']}")
        render_date_picker(PROCUREMENT, records, role, key=f"pick_proc_{project['id']}")
        render_delete_panel(PROCUREMENT, records, role, key=f"proc_{project['id']}")
    else:
        st.info("No procurement items in this project yet.")
    render_reset_panel(PROCUREMENT, project, role)

# ─────────────────────────────────────────────────────────────────────────────
#  PAGE: OPERATIONS
# ─────────────────────────────────────────────────────────────────────────────
elif page == "🏗️ Operations":
    st.markdown(f"# 🏗️ Operations Control · {project['name']}")
    records = store.list_by_project(OPERATIONS, project["id"])
    summary = operations_summary(records)
    groups = group_by_stage(records)

    col_gauge, col_bar = st.columns([1, 2])
    with col_gauge:
        fig_gauge = go.Figure(go.Indicator(
            mode="gauge+number", value=summary["progress"],
            number={"suffix": "%", "font": {"color": "#ffffff"}},
            title={"text": "Overall progress (by handover schedule)", "font": {"color": "#a0aec0"}},
            gauge={
                "axis": {"range": [0, 100], "tickcolor": "#a0aec0"},
                "bar": {"color": "#00CC66"},
                "bgcolor": "#1a1f2e",
            },
        ))
        fig_gauge.update_layout(
            paper_bgcolor="#0e1117", font={"color": "#a0aec0"},
            height=250, margin=dict(l=20, r=20, t=40, b=20),
        )
        st.plotly_chart(fig_gauge, use_container_width=True)
        st.metric("Total items", summary["total"])

    with col_bar:
        df_stage = build_table(OPERATIONS, records, locale=LOCALE)
        stage_rows = []
        for stage in STAGES:
            pct = df_stage.loc[df_stage["stage"] == stage, "progress"].to_numpy()
            stage_rows.append({
                "Stage": stage_label(stage, LOCALE),
                "Progress": float(np.mean(pct)) if pct.size else 0.0,
            })
        df_bar = pd.DataFrame(stage_rows)
        fig_bar = go.Figure(go.Bar(
            x=df_bar["Progress"], y=df_bar["Stage"], orientation="h",
            marker_color="#63b3ed", text=df_bar["Progress"].round(0).astype(int).astype(str) + "%",
        ))
        fig_bar.update_layout(
            paper_bgcolor="#0e1117", plot_bgcolor="#0e1117",
            font={"color": "#a0aec0"}, height=300,
            xaxis={"range": [0, 100]}, yaxis={"autorange": "reversed"},
            margin=dict(l=10, r=10, t=10, b=10),
        )
        st.plotly_chart(fig_bar, use_container_width=True)

    fig = band_donut(OPERATIONS, summary["bands"])
    if fig is not None:
        with st.expander("🚦 Status breakdown"):
            st.plotly_chart(fig, use_container_width=True)

    if POLICY.can_add_record(role):
        if st.button("➕ Add uncategorized item"):
            store.create(OPERATIONS, project["id"], role)
            after_mutation()

    for i, (stage, rows) in enumerate(groups.items()):
        title = stage_label(stage, LOCALE)
        with st.expander(f"{title}  ({len(rows)})", expanded=bool(rows)):
            if rows:
                render_grid(OPERATIONS, rows, role, key=f"grid_ops_{project['id']}_{i}")
            if stage != UNCATEGORIZED and POLICY.can_add_record(role):
                if st.button(f"➕ Add to {title}", key=f"add_ops_{project['id']}_{i}"):
                    store.create(OPERATIONS, project["id"], role, category=stage)
                    after_mutation()

    if records:
        render_date_picker(OPERATIONS, records, role, key=f"pick_ops_{project['id']}")
        render_delete_panel(OPERATIONS, records, role, key=f"ops_{project['id']}")
    render_reset_panel(OPERATIONS, project, role)

# ─────────────────────────────────────────────────────────────────────────────
#  PAGE: EXPORT REPORT
# ─────────────────────────────────────────────────────────────────────────────
elif page == "📤 Export Report":
    st.markdown(f"# 📤 Export Report · {project['name']}")
    kind = st.radio(
        "Table", [PROCUREMENT, OPERATIONS], horizontal=True,
        format_func=lambda k: "📦 Procurement" if k == PROCUREMENT else "🏗️ Operations",
    )
    records = store.list_by_project(kind, project["id"])
    if not records:
        st.info("Nothing to export for this project yet.")
        st.stop()

    st.dataframe(export_frame(kind, records, locale=LOCALE), hide_index=True, use_container_width=True)
    filename, data = export_csv(kind, records, project["name"], locale=LOCALE)
    st.download_button("⬇️ Download CSV", data=data, file_name=filename,
                       mime="text/csv", use_container_width=True)

# ─────────────────────────────────────────────────────────────────────────────
#  PAGE: SCHEDULE ANALYSIS
# ─────────────────────────────────────────────────────────────────────────────
elif page == "🤖 Schedule Analysis":
    st.markdown(f"# 🤖 Schedule Analysis · {project['name']}")
    analyzer = st.session_state.analyzer

    kind = st.radio(
        "Table", [PROCUREMENT, OPERATIONS], horizontal=True,
        format_func=lambda k: "📦 Procurement" if k == PROCUREMENT else "🏗️ Operations",
        key="analysis_kind",
    )
    filters = st.multiselect(
        "Only send", list(FILTERS), default=["late", "upcoming"],
        format_func=lambda f: FILTER_LABELS[f],
        help="Leave empty to send every item with a name.",
    )
    if not config.GEMINI_API_KEY:
        st.caption("ℹ️ GEMINI_API_KEY is not set; requests will fail until it is configured.")

    if st.button("🔍 Analyze", type="primary", disabled=analyzer.busy):
        records = store.list_by_project(kind, project["id"])
        try:
            with st.spinner("Waiting for the analysis service..."):
                st.session_state.analysis_result = analyzer.analyze(kind, records, filters=filters, locale=LOCALE)
        except AnalysisBusyError:
            st.info("An analysis is already running. Please wait for it to finish.")
        except AnalysisError as exc:
            st.session_state.pop("analysis_result", None)
            st.error(f"Analysis failed: {exc}")

    result = st.session_state.get("analysis_result")
    if result is not None:
        st.markdown('<p class="section-header">Summary</p>', unsafe_allow_html=True)
        st.info(result.summary)
        if result.critical_delays:
            st.markdown('<p class="section-header">Critical Delays</p>', unsafe_allow_html=True)
            for text in result.critical_delays:
                st.error(f"🚨 {text}")
        if result.recommendations:
            st.markdown('<p class="section-header">Recommendations</p>', unsafe_allow_html=True)
            for text in result.recommendations:
                st.success(f"💡 {text}")
