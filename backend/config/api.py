"""
Django Ninja API configuration.
"""

from django.http import HttpRequest
from ninja import NinjaAPI

from apps.workspaces.api import provisioning_router
from apps.workspaces.api import router as workspaces_router

api = NinjaAPI(
    title="Workspace Control Plane API",
    version="1.0.0",
    description="Workspace provisioning across Stytch and Stripe, status and admin remedial actions.",
    openapi_extra={
        "info": {
            "contact": {"name": "API Support"},
        },
        "tags": [
            {
                "name": "provisioning",
                "description": "Signup intent staging and the provisioning saga",
            },
            {
                "name": "workspaces",
                "description": "Canonical status, usage and remedial actions",
            },
            {
                "name": "health",
                "description": "Service health and readiness checks",
            },
        ],
        "components": {
            "securitySchemes": {
                "bearerAuth": {
                    "type": "http",
                    "scheme": "bearer",
                    "bearerFormat": "JWT",
                    "description": "Stytch session JWT, or the staff token for admin tooling. Include as: Authorization: Bearer <token>",
                }
            }
        },
    },
)

# Register routers
api.add_router("/provisioning", provisioning_router)
api.add_router("/workspaces", workspaces_router)


@api.get("/health", tags=["health"], operation_id="healthCheck", summary="Health check")
def health_check(request: HttpRequest) -> dict:
    """Health check endpoint for load balancer."""
    return {"status": "ok"}
