# Routes package
from .auth import auth_bp
from .upload import upload_bp
from .processing import processing_bp
