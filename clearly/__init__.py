import logging
import os

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS
from flask_caching import Cache
from flask_jwt_extended import JWTManager
from config import config

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
cache = Cache()

def create_app(config_name='default', overrides=None):
    """Application factory function"""
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)
    app.config['MAX_CONTENT_LENGTH'] = app.config['MAX_FILE_SIZE_MB'] * 1024 * 1024

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
    os.makedirs(app.config['CHUNK_FOLDER'], exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    cache.init_app(app)
    CORS(app)

    # Register blueprints
    from clearly.routes.auth import auth_bp
    from clearly.routes.upload import upload_bp
    from clearly.routes.processing import processing_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(upload_bp, url_prefix='/api/uploads')
    app.register_blueprint(processing_bp, url_prefix='/api/processing')

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'OK'}), 200

    @app.errorhandler(413)
    def file_too_large(error):
        return jsonify({
            'error': 'File too large',
            'message': f"File size exceeds the limit of {app.config['MAX_FILE_SIZE_MB']}MB"
        }), 413

    if app.config.get('SCHEDULER_ENABLED'):
        with app.app_context():
            from clearly.services import init_scheduler
            init_scheduler(app)
    return app
