from qbo_auth.cli import app

if __name__ == "__main__":
    app()
