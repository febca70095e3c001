from dotenv import load_dotenv


from fastapi import FastAPI

load_dotenv()  # Load .env variables into os.environ before settings are read

from dealflow.api.api_v1 import router as api_v1  # noqa: E402
from dealflow.core.config import settings  # noqa: E402
from dealflow.core.lifespan import lifespan  # noqa: E402
from dealflow.core.logging import setup_logging  # noqa: E402

setup_logging(settings.LOG_LEVEL)


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)


@app.get("/")
def root():
    return {"message": f"Hello from {settings.PROJECT_NAME}!"}


app.include_router(api_v1)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
