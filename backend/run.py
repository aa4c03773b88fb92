import os

from trivia import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # Socket.IO dev server so the /ws namespace works locally
    socketio.run(
        app,
        host=os.environ.get('TRIVIA_HOST', '127.0.0.1'),
        port=int(os.environ.get('TRIVIA_PORT', '5000')),
        debug=True,
    )
