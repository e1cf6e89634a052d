"""
Challyme - social habit challenges
JSON API over SQLAlchemy: accounts, friendships, challenges with daily
confirmations, pokes, chat and progress photos
"""

from flask import Flask, Blueprint, request, jsonify, current_app, send_from_directory, url_for
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
import os
import logging
from dotenv import load_dotenv

from models import db, User
from errors import AppError, Conflict, Forbidden, Unauthorized, ValidationError
from schemas import (
    Credentials, LoginRequest, CreateChallengeRequest, ChallengeAction, PokeRequest,
    SendFriendRequest, FriendRequestAnswer, SendInviteRequest, InviteAnswer,
    MessageRequest, UploadImageForm, UsernameQuery, ChallengeQuery,
)
import streaks
import invites
import notifications
from challenges import (
    get_challenge_or_404, update_challenge, create_challenge as create_challenge_record,
    challenges_for, leave_or_delete, post_message, add_image,
)
from image_storage import (
    init_cloudinary, validate_image, store_challenge_image, delete_local_image, MAX_IMAGE_BYTES,
)

load_dotenv()

# --- Logging Setup ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger('challyme')

migrate = Migrate()
limiter = Limiter(
    get_remote_address,
    default_limits=[],
    storage_uri="memory://",
)

api = Blueprint('api', __name__)


def _database_uri():
    # Support DATABASE_URL (Postgres on Render/Heroku) or fall back to SQLite for local dev
    database_url = os.environ.get('DATABASE_URL')
    if database_url:
        # Render/Heroku use postgres:// but SQLAlchemy needs postgresql://
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        return database_url
    data_dir = os.environ.get('DATA_DIR', os.path.dirname(os.path.abspath(__file__)))
    return f'sqlite:///{os.path.join(data_dir, "challyme.db")}'


def create_app(config=None):
    """Build the Flask app. ``config`` overrides settings read from the environment."""
    app = Flask(__name__)

    data_dir = os.environ.get('DATA_DIR', os.path.dirname(os.path.abspath(__file__)))
    app.config.update(
        SQLALCHEMY_DATABASE_URI=_database_uri(),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SQLALCHEMY_ENGINE_OPTIONS={
            'pool_pre_ping': True,  # Test connections before using them
        },
        # Room for the form fields next to a maximum size image
        MAX_CONTENT_LENGTH=MAX_IMAGE_BYTES + 64 * 1024,
        UPLOAD_FOLDER=os.environ.get('UPLOAD_FOLDER', os.path.join(data_dir, 'uploads')),
        CORS_ORIGIN=os.environ.get('CORS_ORIGIN', '*'),
        RATELIMIT_ENABLED=os.environ.get('RATELIMIT_ENABLED', '1') != '0',
    )
    if config:
        app.config.update(config)

    if 'USE_CLOUDINARY' not in app.config:
        app.config['USE_CLOUDINARY'] = init_cloudinary()

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    app.register_blueprint(api)
    app.after_request(set_response_headers)
    register_error_handlers(app)

    return app


# --- Response Headers ---

def set_response_headers(response):
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    # The React client runs on its own origin
    response.headers['Access-Control-Allow-Origin'] = current_app.config['CORS_ORIGIN']
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, DELETE, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return response


# --- Request Parsing ---

def _describe(error):
    first = error.errors()[0]
    field = '.'.join(str(part) for part in first.get('loc', ()))
    message = first.get('msg', 'Invalid value')
    return f'{field}: {message}' if field else message


def parse(model, data):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e))


def parse_body(model):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    return parse(model, data)


def parse_query(model):
    return parse(model, request.args.to_dict())


def image_url(file_ref):
    if file_ref.startswith('http'):
        return file_ref
    return url_for('api.uploaded_file', filename=file_ref)


def image_payload(image):
    payload = image.to_dict()
    payload['url'] = image_url(image.file_ref)
    return payload


# --- Routes ---

@api.route('/')
def index():
    return jsonify({'message': 'Challyme API'})


@api.route('/register', methods=['POST'])
@limiter.limit("5 per minute")
def register():
    payload = parse_body(Credentials)

    if User.query.filter_by(username=payload.username).first():
        raise Conflict('Username already exists.')

    user = User(
        username=payload.username,
        password_hash=generate_password_hash(payload.password),
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict('Username already exists.')

    logger.info(f'Registered user {user.username}')
    return jsonify({'message': 'Registration successful.'}), 201


@api.route('/login', methods=['POST'])
@limiter.limit("5 per minute")
def login():
    payload = parse_body(LoginRequest)

    user = User.query.filter_by(username=payload.username).first()
    if not user or not check_password_hash(user.password_hash, payload.password):
        raise Unauthorized('Invalid username or password.')

    return jsonify({'message': 'Login successful.', 'username': user.username})


@api.route('/create-challenge', methods=['POST'])
@limiter.limit("10 per minute")
def create_challenge():
    payload = parse_body(CreateChallengeRequest)

    challenge = create_challenge_record(
        title=payload.title,
        duration=payload.duration,
        start_date=payload.start_date,
        username=payload.username,
    )
    return jsonify({'message': 'Challenge created.', 'challenge': challenge.to_dict()}), 201


@api.route('/challenges')
def list_challenges():
    query = parse_query(UsernameQuery)
    return jsonify([c.to_dict() for c in challenges_for(query.username)])


@api.route('/challenges/<int:challenge_id>')
def view_challenge(challenge_id):
    return jsonify(get_challenge_or_404(challenge_id).to_dict())


@api.route('/challenges/<int:challenge_id>/leaderboard')
def leaderboard(challenge_id):
    challenge = get_challenge_or_404(challenge_id)
    entries = streaks.leaderboard(challenge, streaks.utcnow())
    return jsonify([e.model_dump(by_alias=True) for e in entries])


@api.route('/confirm', methods=['POST'])
@limiter.limit("10 per minute")
def confirm():
    payload = parse_body(ChallengeAction)
    now = streaks.utcnow()

    result = update_challenge(
        payload.challenge_id,
        lambda challenge: streaks.confirm(challenge, payload.username, now),
    )
    return jsonify(result.model_dump(by_alias=True))


@api.route('/poke', methods=['POST'])
@limiter.limit("20 per minute")
def poke():
    payload = parse_body(PokeRequest)
    now = streaks.utcnow()

    update_challenge(
        payload.challenge_id,
        lambda challenge: streaks.poke(challenge, payload.username, payload.friend, now),
    )
    logger.info(f'{payload.username} poked {payload.friend} in challenge {payload.challenge_id}')
    return jsonify({'message': f'{payload.friend} was poked!'})


@api.route('/delete-challenge', methods=['DELETE'])
def delete_challenge():
    payload = parse_body(ChallengeAction)

    outcome = update_challenge(
        payload.challenge_id,
        lambda challenge: leave_or_delete(challenge, payload.username),
    )
    messages = {
        'deleted': 'Challenge deleted.',
        'deleted_empty': 'Challenge deleted because no participants are left.',
        'left': 'You left the challenge.',
    }
    return jsonify({'message': messages[outcome], 'outcome': outcome})


# --- Friends ---

@api.route('/send-friend-request', methods=['POST'])
@limiter.limit("20 per minute")
def send_friend_request():
    payload = parse_body(SendFriendRequest)
    invites.send_friend_request(payload.from_user, payload.to_user)
    return jsonify({'message': f'Friend request sent to {payload.to_user}!'}), 201


@api.route('/accept-friend-request', methods=['POST'])
def accept_friend_request():
    payload = parse_body(FriendRequestAnswer)
    invites.accept_friend_request(payload.username, payload.friend)
    return jsonify({'message': f'You and {payload.friend} are now friends!'})


@api.route('/decline-friend-request', methods=['POST'])
def decline_friend_request():
    payload = parse_body(FriendRequestAnswer)
    invites.decline_friend_request(payload.username, payload.friend)
    return jsonify({'message': f'Friend request from {payload.friend} declined.'})


@api.route('/friends')
def friends():
    query = parse_query(UsernameQuery)
    return jsonify(invites.list_friends(query.username))


# --- Challenge Invites ---

@api.route('/send-invite', methods=['POST'])
@limiter.limit("20 per minute")
def send_invite():
    payload = parse_body(SendInviteRequest)
    invite = invites.send_challenge_invite(payload.challenge_id, payload.invited_by, payload.invited_user)
    return jsonify({'message': f'Invite sent to {payload.invited_user}!', 'inviteId': invite.id}), 201


@api.route('/accept-invite', methods=['POST'])
def accept_invite():
    payload = parse_body(InviteAnswer)
    invites.accept_challenge_invite(payload.username, payload.invite_id, payload.challenge_id)
    return jsonify({'message': 'Invite accepted!'})


@api.route('/decline-invite', methods=['POST'])
@api.route('/reject-invite', methods=['POST'])
def decline_invite():
    payload = parse_body(InviteAnswer)
    invites.decline_challenge_invite(payload.username, payload.invite_id, payload.challenge_id)
    return jsonify({'message': 'Invite declined.'})


# --- Notifications ---

@api.route('/notifications')
def list_notifications():
    query = parse_query(UsernameQuery)
    notices = notifications.notifications_for(query.username, streaks.utcnow())
    return jsonify([n.to_dict() for n in notices])


@api.route('/notifications/count')
def notification_count():
    query = parse_query(UsernameQuery)
    return jsonify({'count': notifications.notification_count(query.username, streaks.utcnow())})


@api.route('/notify-missed-day', methods=['POST'])
def notify_missed_day():
    payload = parse_body(ChallengeAction)
    challenge = get_challenge_or_404(payload.challenge_id)
    if not challenge.is_participant(payload.username):
        raise Forbidden('You are not a participant of this challenge.')

    notice = notifications.check_missed_day(challenge, payload.username, streaks.utcnow())
    if notice is None:
        return jsonify({'message': 'No missed day.'})
    return jsonify({'notification': notice.to_dict()})


# --- Chat ---

@api.route('/send-challenge-message', methods=['POST'])
@limiter.limit("10 per minute")
def send_challenge_message():
    payload = parse_body(MessageRequest)
    now = streaks.utcnow()

    update_challenge(
        payload.challenge_id,
        lambda challenge: post_message(challenge, payload.username, payload.content, now),
    )
    return jsonify({'message': 'Message sent!'}), 201


@api.route('/challenge-messages')
def challenge_messages():
    query = parse_query(ChallengeQuery)
    challenge = get_challenge_or_404(query.challenge_id)
    return jsonify([m.to_dict() for m in challenge.messages])


# --- Images ---

@api.route('/upload-challenge-image', methods=['POST'])
@limiter.limit("5 per minute")
def upload_challenge_image():
    form = parse(UploadImageForm, request.form.to_dict())
    image = request.files.get('image')
    validate_image(image)

    challenge = get_challenge_or_404(form.challenge_id)
    if not challenge.is_participant(form.username):
        raise Forbidden('You are not a participant of this challenge.')

    upload_folder = current_app.config['UPLOAD_FOLDER']
    ref = store_challenge_image(
        image, challenge.id, form.username, form.day,
        upload_folder=upload_folder,
        use_cloudinary=current_app.config['USE_CLOUDINARY'],
    )

    now = streaks.utcnow()
    try:
        update_challenge(
            form.challenge_id,
            lambda c: add_image(c, form.username, ref, form.day, now),
        )
    except Exception:
        delete_local_image(ref, upload_folder)
        raise

    return jsonify({'message': 'Image uploaded successfully.', 'ref': ref, 'url': image_url(ref)}), 201


@api.route('/challenge-images')
def challenge_images():
    query = parse_query(ChallengeQuery)
    challenge = get_challenge_or_404(query.challenge_id)
    return jsonify([image_payload(i) for i in challenge.images])


@api.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(os.path.abspath(current_app.config['UPLOAD_FOLDER']), filename)


# --- Error Handlers ---

def register_error_handlers(app):

    @app.errorhandler(AppError)
    def handle_app_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(413)
    def request_too_large(e):
        return jsonify({'error': 'Images may be at most 5 MB.'}), ValidationError.status_code

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        return jsonify({'error': 'Too many requests. Please slow down.'}), 429

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def internal_server_error(e):
        db.session.rollback()
        logger.exception(f'Internal server error: {e}')
        return jsonify({'error': 'Internal server error.'}), 500


if __name__ == '__main__':
    create_app().run(debug=True, port=5000)
