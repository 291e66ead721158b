__version__ = "1.0.0"
__description__ = "Convention driven REST API generation for Flask-SQLAlchemy models"
