from .config import Config
from .wsgi import app

if __name__ == '__main__':
    app.run(debug=Config.DEBUG, host='127.0.0.1', port=Config.PORT)
