"""
Blueprint registration for the dojo progression API.

All blueprints are registered without URL prefixes; every route spells out
its full /api/... path.
"""

from __future__ import annotations

from flask import jsonify

from outcomes import ProgressionError


def register_blueprints(app):
    from blueprints.grading import bp as grading_bp
    from blueprints.challenges import bp as challenges_bp
    from blueprints.checkins import bp as checkins_bp
    from blueprints.rankings import bp as rankings_bp
    from blueprints.students import bp as students_bp
    from blueprints.dojo import bp as dojo_bp

    app.register_blueprint(grading_bp)
    app.register_blueprint(challenges_bp)
    app.register_blueprint(checkins_bp)
    app.register_blueprint(rankings_bp)
    app.register_blueprint(students_bp)
    app.register_blueprint(dojo_bp)

    @app.errorhandler(ProgressionError)
    def handle_progression_error(e: ProgressionError):
        if e.http_status >= 409:
            app.logger.warning("%s: %s", e.code, e)
        return jsonify(e.to_dict()), e.http_status
