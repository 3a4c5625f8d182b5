from mxportal import create_app
from mxportal.models import *  # noqa

app = create_app()


if __name__ == '__main__':
    app.run()
