"""Seed the database with a demo family: one parent and two student profiles.

Creates any missing tables first, then writes sample notes, a completed quiz
and a week of AI sessions so the parent dashboard has something to show.

Run from the backend directory:
    python -m scripts.seed_data
"""

import asyncio
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add backend to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import delete, select

from besttutor.auth.passwords import hash_password
from besttutor.database import Base, async_session_factory, engine, utcnow
from besttutor.models import AISession, CornellNote, QuizResult, Subscription, User

DEMO_PARENT = {
    "email": "demo@besttutorever.com",
    "password": "demo1234",
    "name": "Demo Parent",
}

STUDENTS = [
    {"email": "maya@besttutorever.com", "name": "Maya", "grade_level": 5},
    {"email": "leo@besttutorever.com", "name": "Leo", "grade_level": 9},
]

NOTES = [
    {
        "subject": "science",
        "topic": "Photosynthesis",
        "cue_column": ["What do plants need to make food?", "Where does it happen?"],
        "note_body": (
            "Plants use sunlight, water and carbon dioxide to make glucose. "
            "It happens in the chloroplasts, which contain chlorophyll."
        ),
        "summary": "Light energy becomes chemical energy stored in glucose.",
        "tags": ["biology", "exam"],
    },
    {
        "subject": "math",
        "topic": "Adding fractions",
        "cue_column": ["Why do the denominators need to match?"],
        "note_body": "Find a common denominator, rewrite both fractions, then add the numerators.",
        "summary": "Same-sized pieces can be added directly.",
        "tags": ["homework"],
    },
]

QUIZ_QUESTIONS = {
    "quiz": [
        {
            "question": "What is 1/2 + 1/4?",
            "options": ["2/6", "3/4", "1/8", "2/4"],
            "correct_answer": 1,
            "explanation": "1/2 is 2/4, and 2/4 + 1/4 = 3/4.",
        },
        {
            "question": "Which fraction equals 0.5?",
            "options": ["1/5", "5/10", "1/4", "2/5"],
            "correct_answer": 1,
            "explanation": "5 out of 10 is one half.",
        },
    ]
}

# (days ago, session type, subject, success)
SESSIONS = [
    (0, "tutor", "math", True),
    (0, "quiz", "math", True),
    (1, "tutor", "science", True),
    (1, "note_cues", None, True),
    (2, "tutor", "math", False),
    (4, "joke", "space", True),
]


async def seed() -> None:
    """Populate the database with a demo family.

    Idempotent: an existing demo family is deleted and re-created.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.email == DEMO_PARENT["email"]))
        existing_parent = result.scalar_one_or_none()

        if existing_parent is not None:
            print(f"⚠️  Demo parent '{DEMO_PARENT['email']}' already exists. Deleting and re-seeding...")
            # Rows owned by a profile go with it through ON DELETE CASCADE
            await session.execute(delete(User).where(User.parent_id == existing_parent.id))
            await session.execute(delete(User).where(User.id == existing_parent.id))
            await session.flush()

        parent = User(
            email=DEMO_PARENT["email"],
            hashed_password=hash_password(DEMO_PARENT["password"]),
            name=DEMO_PARENT["name"],
            role="parent",
            is_active=True,
        )
        session.add(parent)
        await session.flush()
        session.add(Subscription(user_id=parent.id, status="free"))
        print(f"✅ Created demo parent: {parent.email} (id={parent.id})")

        students: list[User] = []
        for data in STUDENTS:
            student = User(
                **data,
                hashed_password=hash_password(DEMO_PARENT["password"]),
                role="student",
                parent_id=parent.id,
                is_active=True,
            )
            session.add(student)
            await session.flush()
            session.add(Subscription(user_id=student.id, status="free"))
            students.append(student)
            print(f"   🎒 {student.name} (grade {student.grade_level})")

        maya = students[0]
        now = utcnow()

        for note_data in NOTES:
            session.add(CornellNote(user_id=maya.id, **note_data))

        session.add(
            QuizResult(
                user_id=maya.id,
                subject="math",
                topic="Adding fractions",
                quiz_type="quiz",
                questions=QUIZ_QUESTIONS,
                total_questions=2,
                answers=[1, 0],
                score=50.0,
                correct_answers=1,
                time_spent_seconds=140,
                completed=True,
                completed_at=now - timedelta(hours=2),
            )
        )

        for days_ago, session_type, subject, success in SESSIONS:
            session.add(
                AISession(
                    user_id=maya.id,
                    session_type=session_type,
                    subject=subject,
                    model="deepseek/deepseek-chat",
                    provider="deepseek",
                    input_tokens=850,
                    output_tokens=220 if success else 0,
                    cost_usd=Decimal("0.000476") if success else Decimal("0"),
                    duration_ms=1800,
                    message_count=1,
                    success=success,
                    error_code=None if success else "timeout",
                    created_at=now - timedelta(days=days_ago, hours=1),
                )
            )

        await session.commit()

        print()
        print("=" * 60)
        print("📊 Seed Summary")
        print("=" * 60)
        print(f"   Parent:      1 ({DEMO_PARENT['email']} / {DEMO_PARENT['password']})")
        print(f"   Students:    {len(students)} (same password)")
        print(f"   Notes:       {len(NOTES)}")
        print("   Quizzes:     1")
        print(f"   AI sessions: {len(SESSIONS)}")
        print("=" * 60)
        print("🎉 Done! You can now log in at /api/v1/auth/login")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
