from .activities_controller import activities_bp
from .logs_controller import logs_bp
from .reports_controller import reports_bp
from .segments_controller import segments_bp
from .system_controller import system_bp


def register_controllers(app):
    app.register_blueprint(system_bp)
    app.register_blueprint(activities_bp)
    app.register_blueprint(segments_bp)
    app.register_blueprint(logs_bp)
    app.register_blueprint(reports_bp)
