from mediarelay.configs import settings
from mediarelay.main import app

# Run the relay app
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
