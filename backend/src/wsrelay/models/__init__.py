from .models import Connection, ConnectionManager
