from app.folio import create_app

app = create_app()
