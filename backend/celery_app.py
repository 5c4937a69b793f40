from vendorflow import create_app
from vendorflow.celery_app import create_celery_app

# celery -A celery_app.celery worker --beat
flask_app = create_app()
celery = create_celery_app(flask_app)
