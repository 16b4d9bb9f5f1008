"""
Image Manager

Handles expressions whose pattern addresses existing images (``!(1)``,
``!(-1)``, ``!(*)``, ``![alt regex]`` or ``{img=...}``). The replacement
decides the operation: empty deletes, image syntax swaps the image source,
anything else replaces the image with text.
"""
import logging
from typing import Any, Dict, List

from docsed import docs_helpers as helpers
from docsed.docs_structure import DocImage, find_doc_images, match_images
from docsed.managers.batch_executor import DocsBatchExecutor
from docsed.sed_expression import ImageRef
from docsed.sed_markdown import ImageSpec, literal_replacement, parse_image_shorthand, parse_image_syntax

logger = logging.getLogger(__name__)


def build_image_requests(images: List[DocImage], replacement: str) -> List[Dict[str, Any]]:
    """
    Requests that apply a replacement to the given images.

    Inline images are handled from the highest index down so earlier
    deletions don't shift later ones. Positioned images have no index and
    can only be deleted; inserting a new positioned image is not supported.
    """
    new_image = parse_image_syntax(replacement) or parse_image_shorthand(replacement)
    text = literal_replacement(replacement)

    positioned = [img for img in images if img.is_positioned]
    inline = sorted((img for img in images if not img.is_positioned), key=lambda img: img.index, reverse=True)

    requests = []
    for img in inline:
        if new_image is not None and replacement:
            requests.append(helpers.create_replace_image_request(img.object_id, new_image.url))
            continue
        requests.append(helpers.create_delete_range_request(img.index, img.index + 1))
        if text:
            requests.append(helpers.create_insert_text_request(img.index, text))

    for img in positioned:
        if new_image is not None:
            logger.warning(f"Positioned image {img.object_id} is deleted, not replaced")
        requests.append(helpers.create_delete_positioned_object_request(img.object_id))
    return requests


def image_spec_size(spec: ImageSpec) -> Dict[str, Any]:
    """Keyword arguments for create_insert_image_request from an ImageSpec."""
    return {'width': spec.width or None, 'height': spec.height or None}


class ImageManager:
    """Replaces, deletes or swaps out existing images."""

    def __init__(self, executor: DocsBatchExecutor):
        self.executor = executor

    async def replace_images(self, ref: ImageRef, replacement: str, global_: bool) -> Dict[str, Any]:
        """
        Apply a replacement to the images a reference selects.

        Args:
            ref: Which images to address
            replacement: Empty, image syntax, or text
            global_: Apply to every selected image instead of the first

        Returns:
            Output fields: ``replaced`` plus a ``message`` when nothing matched
        """
        doc_data = await self.executor.fetch_document()
        images = find_doc_images(doc_data)
        if not images:
            return {'replaced': 0, 'message': "no images found in document"}

        matched = match_images(images, ref)
        if not matched:
            return {'replaced': 0, 'message': "no images matched pattern"}
        if not global_:
            matched = matched[:1]

        requests = build_image_requests(matched, replacement)
        if not requests:
            return {'replaced': 0}
        await self.executor.batch_update(requests)
        logger.info(f"Applied {ref} to {len(matched)} image(s)")
        return {'replaced': len(matched)}
