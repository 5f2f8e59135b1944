# run.py
"""
Main application entry point for the continuous behavioral authentication service
"""
import os
import logging
from behavioral_auth import create_app
from behavioral_auth.models.database import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('behavioral_auth.log'),
        logging.StreamHandler()
    ]
)

app = create_app(os.environ.get('FLASK_CONFIG', 'development'))

if __name__ == '__main__':
    # Initialize database
    os.makedirs(os.path.join(os.path.dirname(os.path.abspath(__file__)), 'behavioral_auth', 'database'),
                exist_ok=True)
    with app.app_context():
        init_db()

    try:
        app.run(debug=False, host='127.0.0.1', port=5000, threaded=True)
    finally:
        app.extensions['auth_service'].shutdown()
