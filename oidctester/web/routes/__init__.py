"""Web routes for the OIDC tester."""

from flask import Blueprint, Flask

main_bp = Blueprint("main", __name__)


@main_bp.route("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


def init_app(app: Flask) -> None:
    """Register blueprints with the Flask app."""
    from oidctester.web.routes.idp import idp_bp
    from oidctester.web.routes.tester import tester_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(idp_bp)
    app.register_blueprint(tester_bp)
