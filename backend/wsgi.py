# backend/wsgi.py
from vitana import create_app

app = create_app()
