from app.qms import create_app

app = create_app()
