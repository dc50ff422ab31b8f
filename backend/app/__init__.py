from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

SEED_QUESTIONS = [
    ('Which would you rather have?', 'Ability to fly', 'Ability to be invisible'),
    ('Weekend plans?', 'Stay home', 'Go out'),
    ('Pick a breakfast', 'Sweet', 'Savory'),
    ('Vacation style', 'Beach', 'Mountains'),
    ('Would you rather', 'Text', 'Call'),
]

SEED_PROMPTS = [
    ('What made you smile today?', 'daily', 1),
    ('Which song always puts you in a good mood?', 'favorites', 1),
    ('What is a small habit you are proud of?', 'growth', 2),
    ('When did you last feel really understood?', 'deep', 3),
]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from app.errors import IcebreakerError

    @flask_app.errorhandler(IcebreakerError)
    def handle_icebreaker_error(exc):
        return jsonify({'error': exc.message, 'code': exc.code}), exc.status

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required', 'code': 'unauthenticated'}), 401

    # Import and register blueprints here
    from app.main import main
    flask_app.register_blueprint(main, url_prefix='/api/auth')

    from app.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from app.api.chat import chat
    flask_app.register_blueprint(chat, url_prefix='/api/chat')

    from app.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from app.api.questions import questions
    flask_app.register_blueprint(questions, url_prefix='/api/questions')

    from app.api.stats import stats
    flask_app.register_blueprint(stats, url_prefix='/api/stats')

    # The realtime core lives for as long as this app does
    from app.coordinator import init_coordinator
    init_coordinator(flask_app, socketio)

    from app.socketio_events import register_socketio_handlers
    register_socketio_handlers(flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    from app.services.games.scheduler import schedule_session_sweep
    schedule_session_sweep(flask_app)

    @flask_app.route('/health')
    def health():
        return jsonify({'status': 'OK', 'message': 'Server is running!'})

    # Flask-Login user loader
    from app.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from app.models import BalanceQuestion, Question, User
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u, display_name=u.title())
                user.set_password('password')
                db.session.add(user)

            for question, option_a, option_b in SEED_QUESTIONS:
                db.session.add(BalanceQuestion(question=question, option_a=option_a, option_b=option_b))

            for text, category, level in SEED_PROMPTS:
                db.session.add(Question(question_text=text, category=category, level=level))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
