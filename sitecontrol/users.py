"""
Fixed user directory for the login screen.

Login is a trusted claim: the username is looked up, the password is not
checked. The role decides what the session may edit.
"""

from sitecontrol.access import ADMIN, EXECUTOR, PLANNER, PROCUREMENT_ROLE

USERS = (
    {"username": "admin", "name": "系統管理員", "department": "ADMIN", "role": ADMIN},
    {"username": "proc_user", "name": "採購小李", "department": "PROCUREMENT", "role": PROCUREMENT_ROLE},
    {"username": "ops_user", "name": "營管小張", "department": "OPERATIONS", "role": PLANNER},
    {"username": "qa_user", "name": "品保小王", "department": "QUALITY", "role": EXECUTOR},
)


def find_user(username):
    username = (username or "").strip()
    for user in USERS:
        if user["username"] == username:
            return dict(user)
    return None
