from flask import Flask

from offmark.api import api_bp
from offmark.config import Config
from offmark.extensions import db
from offmark.jobs.scheduler import start_scheduler
from offmark.schema_migrations import add_sync_attempt_columns
from offmark.services.engine import build_engine


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        add_sync_attempt_columns()
        print("Initialized Offmark database.")

    @app.cli.command("sync-now")
    def sync_now_command():
        engine = app.extensions["offmark"]
        result = engine.orchestrator.run_sync()
        state = engine.sync_state()
        if result is None:
            print(state.message or "Sync did not run.")
            return
        print(
            f"Synced {result.synced_count}, failed {result.failed_count}, "
            f"skipped {result.skipped_count} bookmarks."
        )

    @app.cli.command("pending-count")
    def pending_count_command():
        engine = app.extensions["offmark"]
        print(engine.get_offline_pending_count())

    with app.app_context():
        db.create_all()
        add_sync_attempt_columns()

    build_engine(app)
    start_scheduler(app)
    return app
