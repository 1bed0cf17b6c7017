"""FastAPI surface for the approval workflow.

The UI files requests and posts approver decisions here. All state changes
go through the workflow orchestrator; the routes only translate HTTP to
calls and workflow errors to status codes.
"""

from __future__ import annotations

from fastapi import FastAPI

from cashflow.api.routes import register_routes

tags_metadata = [
    {
        "name": "Requests",
        "description": "File Cash Advance and Liquidation requests and record Level 1 / Level 2 decisions"
    },
]

app = FastAPI(
    title='Cash Advance & Liquidation Approvals',
    version='1.0.0',
    description='Two-level approval workflow',
    openapi_tags=tags_metadata
)

# Register all API routes
register_routes(app)
