# backend/wsgi.py
from cookwallet import create_app

app = create_app()
