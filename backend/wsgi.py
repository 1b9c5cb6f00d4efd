from coopfood import create_app

app = create_app()
