# backend/wsgi.py
from invoicebridge import create_app

app = create_app()
