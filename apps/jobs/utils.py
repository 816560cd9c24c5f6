import json
import requests
import logging
from django.conf import settings
from core.exceptions import ImageHostError, ValidationError

logger = logging.getLogger(__name__)

IMAGE_PRESETS = {
    'job': 'IMAGE_HOST_JOB_PRESET',
    'completion': 'IMAGE_HOST_COMPLETION_PRESET',
}


def upload_image(image, kind='job'):
    """
    Forward an uploaded image to the image host and return its stable URL.
    `kind` picks the upload preset ('job' or 'completion').
    """
    if not settings.IMAGE_HOST_UPLOAD_URL:
        logger.error("Image upload attempted but IMAGE_HOST_UPLOAD_URL is not configured")
        raise ImageHostError("Image uploads are not configured.")

    preset = getattr(settings, IMAGE_PRESETS[kind])
    name = getattr(image, 'name', None) or f"{kind}.jpg"
    content_type = getattr(image, 'content_type', None) or 'image/jpeg'
    try:
        logger.info(f"Uploading {kind} image {name} to image host")
        response = requests.post(
            settings.IMAGE_HOST_UPLOAD_URL,
            data={'upload_preset': preset},
            files={'file': (name, image, content_type)},
            timeout=settings.IMAGE_HOST_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.HTTPError as e:
        logger.error(f"Image host HTTP error: {str(e)}, Response: {response.text}")
        raise ImageHostError("The image host rejected the upload.")
    except requests.exceptions.RequestException as e:
        logger.error(f"Image host request failed: {str(e)}")
        raise ImageHostError("The image host could not be reached.")
    except ValueError as e:
        logger.error(f"Image host returned invalid JSON: {str(e)}")
        raise ImageHostError()

    url = data.get('secure_url')
    if not url:
        logger.error(f"Image host response without secure_url: {data}")
        raise ImageHostError()
    return url


def request_payload(request, file_field, json_fields=()):
    """
    Plain dict of the request body without the uploaded `file_field`.
    Multipart bodies carry nested objects as JSON strings in `json_fields`.
    """
    data = {key: request.data.get(key) for key in request.data.keys() if key != file_field}
    for field in json_fields:
        if isinstance(data.get(field), str):
            try:
                data[field] = json.loads(data[field])
            except ValueError:
                raise ValidationError({field: ["Must be a JSON object."]})
    return data


def pending_upload(request, file_field, kind):
    """
    A callable that sends the uploaded `file_field` to the image host, or
    None when the request carries no file. Nothing is sent until it is called.
    """
    image = request.FILES.get(file_field)
    if image is None:
        return None
    return lambda: upload_image(image, kind)
