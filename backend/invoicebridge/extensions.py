# Overview: Flask extension instances for database, migrations, and the repository read cache.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .cache import TTLCache

db = SQLAlchemy()
migrate = Migrate()
repository_cache = TTLCache()
