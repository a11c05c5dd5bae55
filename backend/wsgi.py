# backend/wsgi.py
from passcard import create_app

app = create_app()
