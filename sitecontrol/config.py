"""
Runtime settings, read once from the environment.

    SITECONTROL_DATA_DIR      where the JSON snapshots live (default ./data)
    SITECONTROL_LOCALE        zh-TW | en, labels used in tables and exports
    SITECONTROL_LOCK_TITLE    lock the item-name column for non-admin roles
    GEMINI_API_KEY            key for the schedule analysis service
    SITECONTROL_GEMINI_MODEL  model used for schedule analysis
    LOG_LEVEL                 DEBUG / INFO / WARNING ...
"""

import os

DATA_DIR = os.getenv("SITECONTROL_DATA_DIR", os.path.join(os.getcwd(), "data"))

SUPPORTED_LOCALES = ("zh-TW", "en")
LOCALE = os.getenv("SITECONTROL_LOCALE", "zh-TW")
if LOCALE not in SUPPORTED_LOCALES:
    LOCALE = "zh-TW"

LOCK_TITLE_FIELD = os.getenv("SITECONTROL_LOCK_TITLE", "false").lower() in ("1", "true", "yes")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("SITECONTROL_GEMINI_MODEL", "gemini-2.5-flash")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Records saved before projects existed belong here
DEFAULT_PROJECT_ID = "default-project"
DEFAULT_PROJECT_NAME = "Default Project"

UPCOMING_WINDOW_DAYS = 7
ANALYSIS_RECENT_DAYS = 30
ANALYSIS_UPCOMING_DAYS = 30
