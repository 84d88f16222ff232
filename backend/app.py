import pathlib
import sys

import modal

app = modal.App(name="emergency-ar")

image = modal.Image.debian_slim(python_version="3.11").pip_install(
    "fastapi",
    "uvicorn",
    "websockets>=12.0",
    "openai>=1.0",
    "dedalus_labs",
    "httpx",
    "twilio",
)

# Copy all backend .py files into the image directly
backend_dir = pathlib.Path(__file__).parent
for py_file in backend_dir.glob("*.py"):
    if py_file.name != "app.py" and not py_file.name.startswith("test_"):
        image = image.add_local_file(str(py_file), f"/root/{py_file.name}")


@app.function(
    image=image,
    secrets=[modal.Secret.from_dotenv(__file__)],
    timeout=3600,
)
@modal.asgi_app()
def create_app():
    sys.path.insert(0, "/root")

    from server import create_web_app

    return create_web_app()
