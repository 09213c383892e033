"""HTTP server package: FastAPI routes over the transcription workflow.

WHY: Callers that cannot embed the Python client (web pages, automation,
other languages) reach each workflow stage and the background workflow
runner over HTTP.

HOW: app.py defines the routes, models.py the pydantic schemas, jobs.py
the in-memory store for background workflow jobs.
"""
