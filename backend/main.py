# main.py
#
# Local development server. The deployed API runs on Lambda through
# `clinic.main.handler`.
#
# Usage (from backend/):  python main.py

import uvicorn

from clinic.main import app  # noqa: F401

if __name__ == "__main__":
    print("Starting FastAPI development server...")
    # Make sure env variables are set: AWS_REGION, the *_TABLE_NAME tables, COGNITO_USERPOOL_ID, API_JWT_SECRET
    uvicorn.run("clinic.main:app", host="127.0.0.1", port=8000, reload=True)
