from flask import Blueprint, jsonify
import time

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Far Meow backend running'})


@main.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok', 'timestamp': int(time.time() * 1000)})
