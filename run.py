# run.py
from storefront.config import Config
from storefront.main import app

if __name__ == "__main__":
    # The app is run from here to ensure it works correctly
    # when the project is executed as a package.
    app.run(
        debug=Config.DEBUG,
        host=Config.FLASK_RUN_HOST,
        port=Config.FLASK_RUN_PORT,
        use_reloader=False,
    )
