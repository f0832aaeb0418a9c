"""
Lorey - Flask Application
JSON API for turning lesson text into illustrated, quiz-annotated stories.
"""
import os

import requests
from flask import Flask, request, jsonify
from flask_cors import CORS

from .config import config
from .models import db, Story
from .utils import clean_lesson_text, validate_lesson_text
from .services.openrouter_client import ImageGenerationError, get_openrouter_client
from .services.image_generator import generate_image_with_retry
from .services.plans import list_plans
from .services.quiz_generator import generate_quiz
from .services.story_generator import StoryGenerationError, generate_story


# Initialize Flask app
app = Flask(__name__)
app.config.from_object(config[os.getenv('FLASK_ENV', 'development')])

# Initialize extensions
db.init_app(app)
CORS(app, resources={r"/*": {"origins": app.config['CORS_ALLOWED_ORIGINS']}}, supports_credentials=True)


def _error(message, status, detail=None):
    payload = {'error': message}
    if detail:
        payload['message'] = detail
    return jsonify(payload), status


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def init_database():
    """Create tables if they do not exist."""
    with app.app_context():
        db.create_all()
        app.logger.info("Database initialized")


# ============================================================================
# HEALTH
# ============================================================================

@app.route('/health')
def health():
    return jsonify({'status': 'ok', 'message': 'Lorey API is running'})


# ============================================================================
# GENERATION
# ============================================================================

@app.route('/api/generate/story', methods=['POST'])
def api_generate_story():
    """Generate, reconcile and store a story for the submitted lesson."""
    data = _json_body()
    lesson_text = data.get('lessonText')
    universe = data.get('universe')
    user_id = data.get('userId')

    app.logger.info(
        "Story generation request received: universe=%s, lesson length=%s",
        universe,
        len(lesson_text) if isinstance(lesson_text, str) else 0,
    )

    if not isinstance(lesson_text, str) or not isinstance(universe, str) or not universe.strip():
        return _error('Lesson text and universe are required', 400)
    if user_id is not None and not isinstance(user_id, str):
        return _error('userId must be a string', 400)
    universe = universe.strip()

    lesson_text = clean_lesson_text(lesson_text)
    is_valid, problem = validate_lesson_text(lesson_text, app.config['MIN_LESSON_LENGTH'])
    if not is_valid:
        return _error(problem, 400)

    client = get_openrouter_client()
    if not client.is_configured:
        return _error('OpenRouter API key not configured', 503)

    try:
        result = generate_story(lesson_text, universe, client=client)
    except StoryGenerationError as exc:
        return _error('Failed to generate story', 502, str(exc))

    reconciliation = result.pop('reconciliation')
    story = Story(
        user_id=user_id,
        title=result['title'],
        universe=universe,
        story_data=result,
    )
    db.session.add(story)
    db.session.commit()
    app.logger.info("Stored story %s with %s paragraphs", story.id, len(result['story']))

    response = dict(result)
    response['id'] = story.id
    response['reconciliation'] = reconciliation
    return jsonify(response), 201


@app.route('/api/generate/image', methods=['POST'])
def api_generate_image():
    data = _json_body()
    prompt = data.get('prompt')
    universe = data.get('universe')

    if not prompt or not universe:
        return _error('Prompt and universe are required', 400)

    client = get_openrouter_client()
    if not client.is_configured:
        return _error('OpenRouter API key not configured', 503)

    try:
        image_url = generate_image_with_retry(
            prompt, universe, max_retries=app.config['IMAGE_MAX_RETRIES'], client=client
        )
    except ImageGenerationError as exc:
        return _error('Failed to generate image', 502, str(exc))

    return jsonify({'imageUrl': image_url})


@app.route('/api/generate/quiz', methods=['POST'])
def api_generate_quiz():
    data = _json_body()
    concept = data.get('concept')

    if not concept:
        return _error('Concept is required', 400)

    client = get_openrouter_client()
    if not client.is_configured:
        return _error('OpenRouter API key not configured', 503)

    try:
        quiz = generate_quiz(concept, data.get('universe'), client=client)
    except requests.exceptions.RequestException as exc:
        app.logger.error("Quiz generation request failed: %s", exc)
        return _error('Failed to generate quiz', 502, str(exc))

    if quiz is None:
        return _error('Failed to generate quiz', 502, 'Invalid response from quiz model')
    return jsonify(quiz)


# ============================================================================
# STORIES
# ============================================================================

@app.route('/api/stories')
def api_list_stories():
    query = Story.query
    user_id = request.args.get('user_id')
    if user_id:
        query = query.filter_by(user_id=user_id)
    stories = query.order_by(Story.created_at.desc()).all()
    return jsonify({'stories': [story.to_summary() for story in stories]})


@app.route('/api/stories/<story_id>')
def api_get_story(story_id):
    story = db.session.get(Story, story_id)
    if story is None:
        return _error('Story not found', 404)
    return jsonify(story.to_dict())


@app.route('/api/stories/<story_id>', methods=['DELETE'])
def api_delete_story(story_id):
    story = db.session.get(Story, story_id)
    if story is None:
        return _error('Story not found', 404)
    db.session.delete(story)
    db.session.commit()
    return '', 204


@app.route('/api/stories/<story_id>/images/<int:index>', methods=['POST'])
def api_generate_story_image(story_id, index):
    """Illustrate one paragraph of a stored story and save the image URL on it."""
    story = db.session.get(Story, story_id)
    if story is None:
        return _error('Story not found', 404)

    paragraphs = story.paragraphs
    if index >= len(paragraphs):
        return _error('Paragraph not found', 404)

    prompt = paragraphs[index].get('imagePrompt') if isinstance(paragraphs[index], dict) else None
    if not prompt:
        return _error('Paragraph has no image prompt', 400)

    client = get_openrouter_client()
    if not client.is_configured:
        return _error('OpenRouter API key not configured', 503)

    try:
        image_url = generate_image_with_retry(
            prompt, story.universe, max_retries=app.config['IMAGE_MAX_RETRIES'], client=client
        )
    except ImageGenerationError as exc:
        return _error('Failed to generate image', 502, str(exc))

    story.set_image_url(index, image_url)
    db.session.commit()
    return jsonify({'imageUrl': image_url, 'index': index})


@app.route('/api/plans')
def api_plans():
    return jsonify({'plans': list_plans()})


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.errorhandler(404)
def not_found(error):
    return _error('Not found', 404, f'Route {request.method} {request.path} not found')


@app.errorhandler(413)
def payload_too_large(error):
    return _error('Payload too large', 413, f"Request body exceeds {app.config['MAX_CONTENT_LENGTH']} bytes")


@app.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    app.logger.error("Unhandled error: %s", error)
    return _error('Internal server error', 500)


# ============================================================================
# INITIALIZATION
# ============================================================================

if __name__ == '__main__':
    init_database()
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 3001)), debug=app.config['DEBUG'])
