from clinic_access.main import create_app  # pragma: no cover

# Allows `python -m clinic_access` to run uvicorn programmatically.
if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
