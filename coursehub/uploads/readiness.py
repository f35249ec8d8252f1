"""
Course publishing checklist
"""

from typing import List


def has_price(course) -> bool:
    return bool(course.is_free) or (course.price is not None and course.price > 0)


def completion_checks(course, lessons: list) -> dict:
    return {
        "has_basic_info": bool(course.title and course.description and course.category_id),
        "has_thumbnail": bool(course.thumbnail),
        "has_lessons": len(lessons) > 0,
        "all_lessons_have_videos": all(lesson.video_url for lesson in lessons),
        "has_price": has_price(course),
    }


def publish_errors(course, lessons: list) -> List[str]:
    """Reasons a course cannot be published yet, empty when it is ready"""
    errors = []
    if not course.title or not course.description:
        errors.append("Course must have title and description")
    if not course.thumbnail:
        errors.append("Course must have a thumbnail")
    if not lessons:
        errors.append("Course must have at least one lesson")
    if not has_price(course):
        errors.append("Paid course must have a price greater than 0")

    missing_videos = [lesson for lesson in lessons if not lesson.video_url]
    if missing_videos:
        errors.append(f"{len(missing_videos)} lessons are missing videos")
    return errors


def wizard_steps(course, lessons: list, asset_counts: dict) -> list:
    return [
        {
            "step": "basic_info",
            "name": "Basic Information",
            "completed": bool(course.title and course.description and course.category_id),
            "required": True,
        },
        {
            "step": "thumbnail",
            "name": "Course Thumbnail",
            "completed": bool(course.thumbnail),
            "required": True,
        },
        {
            "step": "lessons",
            "name": "Lessons",
            "completed": len(lessons) > 0,
            "required": True,
            "details": {
                "total": len(lessons),
                "with_videos": len([l for l in lessons if l.video_url]),
                "with_assets": len([l for l in lessons if asset_counts.get(l.id, 0) > 0]),
            },
        },
        {
            "step": "pricing",
            "name": "Pricing",
            "completed": has_price(course),
            "required": True,
        },
        {
            "step": "review",
            "name": "Review & Publish",
            "completed": bool(course.published),
            "required": False,
        },
    ]
