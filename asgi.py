"""
asgi.py -- Application assembly for AdvisorGate.

Joins the API app and the page routes into a single ASGI app. api/main.py
installs the session guard from web/session_guard.py but never mounts the
page routes; web/ imports nothing from api/.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

# Mount the page routes here, not in api/main.py.
app.include_router(web_router, tags=["Pages"])
