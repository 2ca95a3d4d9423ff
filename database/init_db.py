import os
import sys

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from suprimentos import create_app
from suprimentos.db import init_db


app = create_app()


if __name__ == "__main__":
    with app.app_context():
        init_db()
    print("Database initialized: local_cache, quotation_documents, order_documents.")
