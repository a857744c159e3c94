import os

# Keep the app import from installing global tracer/meter providers during tests.
os.environ.setdefault("INTAKE_OTEL_ENABLED", "false")
os.environ.pop("INTAKE_REDIS_URL", None)
os.environ.pop("INTAKE_DATABASE_URL", None)
