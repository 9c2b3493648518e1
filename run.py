"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py init-db
    flask --app run.py seed-options
    flask --app run.py seed-users
    flask --app run.py --debug run

"""

from material_trials import create_app

# WSGI application object; `flask run` and WSGI servers look for `app`.
app = create_app()

if __name__ == "__main__":
    # Direct `python run.py` usage is for development only.
    app.run(debug=True)
