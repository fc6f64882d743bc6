from flask import Blueprint, jsonify

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'ok': True, 'message': 'Welcome to the team vault sync server!'})


@main.app_errorhandler(404)
def not_found(_error):
    return jsonify({'ok': False, 'error': 'Not Found'}), 404


@main.app_errorhandler(405)
def method_not_allowed(_error):
    return jsonify({'ok': False, 'error': 'Method Not Allowed'}), 405
