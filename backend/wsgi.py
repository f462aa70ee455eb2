# backend/wsgi.py
from medisupply import create_app

app = create_app()
