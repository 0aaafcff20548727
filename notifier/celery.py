from celery import Celery

celery = Celery("notifier")

celery.config_from_object("notifier.config.celeryconfig")
