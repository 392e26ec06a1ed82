import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify

load_dotenv()

from models import db
from services.calendar_routes import calendar_bp
from services.errors import CalendarError
from services.task_links import SqlTaskSource
from services.validation_service import parse_bool


def create_app(test_config=None):
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///calendar.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'UTC')
    app.config['CALENDAR_PARALLEL_FETCH'] = parse_bool(os.environ.get('CALENDAR_PARALLEL_FETCH'), default=True)
    app.config['CALENDAR_MAX_OCCURRENCES'] = int(os.environ.get('CALENDAR_MAX_OCCURRENCES', 1000))
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO').upper()
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    app.logger.setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)
    # Task domain access; tests swap in their own source.
    app.extensions['task_source'] = SqlTaskSource()
    app.register_blueprint(calendar_bp)

    @app.errorhandler(CalendarError)
    def handle_calendar_error(exc):
        if exc.status_code >= 500:
            app.logger.error('Calendar request failed: %s', exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    with app.app_context():
        db.create_all()

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', debug=True)
