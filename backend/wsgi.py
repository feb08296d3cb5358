"""WSGI configuration for production deployment."""
import os
from rollcall import create_app

# Create Flask application instance
app = create_app(os.getenv('FLASK_ENV', 'development'))

# Lifecycle routines run beside the web workers unless disabled
if app.config.get('SCHEDULER_ENABLED'):
    from rollcall.services.lifecycle_scheduler import LifecycleScheduler
    scheduler = LifecycleScheduler(app)
    scheduler.start()

if __name__ == "__main__":
    app.run()
