"""Seed the role-weighted quiz question bank into quiz_questions/quiz_options."""
import asyncio
import sys
sys.path.insert(0, ".")

from sqlalchemy import select
from app.database import async_session_factory
from app.models.questionnaire import QuizOption, QuizQuestion
from app.services.quiz_service import QuizService


QUIZ_QUESTIONS = [
    {
        "question_text": "When working on a group project, I prefer to:",
        "options": [
            ("Take charge and delegate tasks to everyone", {"LEADER": 1.0, "PLANNER": 0.3}),
            ("Create a detailed timeline and track progress", {"PLANNER": 1.0, "TEAM_PLAYER": 0.4}),
            ("Focus on mastering the technical details", {"EXPERT": 1.0, "CHALLENGER": 0.3}),
            ("Brainstorm creative solutions", {"CREATIVE": 1.0, "COMMUNICATOR": 0.3}),
        ],
    },
    {
        "question_text": "During team discussions, I usually:",
        "options": [
            ("Question assumptions and push for better solutions", {"CHALLENGER": 1.0, "LEADER": 0.4}),
            ("Make sure everyone's voice is heard", {"COMMUNICATOR": 1.0, "TEAM_PLAYER": 0.6}),
            ("Provide expert analysis and data", {"EXPERT": 1.0, "PLANNER": 0.3}),
            ("Suggest innovative approaches", {"CREATIVE": 1.0, "COMMUNICATOR": 0.4}),
        ],
    },
    {
        "question_text": "My strength in a team is:",
        "options": [
            ("Keeping everyone organized and on schedule", {"PLANNER": 1.0, "LEADER": 0.3}),
            ("Supporting teammates and maintaining morale", {"TEAM_PLAYER": 1.0, "COMMUNICATOR": 0.5}),
            ("Deep knowledge in the subject matter", {"EXPERT": 1.0, "CHALLENGER": 0.2}),
            ("Finding unique perspectives", {"CREATIVE": 1.0, "CHALLENGER": 0.4}),
        ],
    },
    {
        "question_text": "When facing a problem, I:",
        "options": [
            ("Rally the team and create an action plan", {"LEADER": 1.0, "PLANNER": 0.5}),
            ("Research thoroughly before deciding", {"EXPERT": 1.0, "PLANNER": 0.4}),
            ("Challenge conventional thinking", {"CHALLENGER": 1.0, "CREATIVE": 0.5}),
            ("Facilitate brainstorming sessions", {"COMMUNICATOR": 1.0, "CREATIVE": 0.4}),
        ],
    },
    {
        "question_text": "People usually describe me as:",
        "options": [
            ("A natural leader who takes initiative", {"LEADER": 1.0, "CHALLENGER": 0.3}),
            ("Organized and dependable", {"PLANNER": 1.0, "TEAM_PLAYER": 0.5}),
            ("Knowledgeable and analytical", {"EXPERT": 1.0, "CHALLENGER": 0.3}),
            ("Imaginative and original", {"CREATIVE": 1.0, "COMMUNICATOR": 0.3}),
        ],
    },
    {
        "question_text": "In group conflicts, I tend to:",
        "options": [
            ("Take control and mediate decisively", {"LEADER": 1.0, "COMMUNICATOR": 0.4}),
            ("Listen to all sides and find compromise", {"TEAM_PLAYER": 1.0, "COMMUNICATOR": 0.6}),
            ("Analyze the root cause logically", {"EXPERT": 1.0, "PLANNER": 0.3}),
            ("Challenge everyone to think differently", {"CHALLENGER": 1.0, "LEADER": 0.3}),
        ],
    },
    {
        "question_text": "I enjoy tasks that require:",
        "options": [
            ("Strategic planning and coordination", {"PLANNER": 1.0, "LEADER": 0.4}),
            ("Deep research and analysis", {"EXPERT": 1.0, "PLANNER": 0.3}),
            ("Creative problem-solving", {"CREATIVE": 1.0, "CHALLENGER": 0.4}),
            ("Team collaboration and communication", {"COMMUNICATOR": 1.0, "TEAM_PLAYER": 0.5}),
        ],
    },
    {
        "question_text": "My ideal role in a team project:",
        "options": [
            ("Project manager overseeing everything", {"LEADER": 1.0, "PLANNER": 0.6}),
            ("Subject matter expert providing guidance", {"EXPERT": 1.0, "COMMUNICATOR": 0.3}),
            ("Creative director exploring new ideas", {"CREATIVE": 1.0, "LEADER": 0.3}),
            ("Team coordinator ensuring everyone contributes", {"TEAM_PLAYER": 1.0, "COMMUNICATOR": 0.5}),
        ],
    },
    {
        "question_text": "When deadlines approach, I:",
        "options": [
            ("Create a clear plan and prioritize tasks", {"PLANNER": 1.0, "LEADER": 0.5}),
            ("Stay calm and support stressed teammates", {"TEAM_PLAYER": 1.0, "COMMUNICATOR": 0.4}),
            ("Focus intensely on the technical work", {"EXPERT": 1.0, "PLANNER": 0.3}),
            ("Find innovative shortcuts", {"CREATIVE": 1.0, "CHALLENGER": 0.4}),
        ],
    },
]


async def seed():
    async with async_session_factory() as session:
        for index, q in enumerate(QUIZ_QUESTIONS):
            existing = await session.execute(
                select(QuizQuestion).where(QuizQuestion.question_text == q["question_text"])
            )
            if existing.scalar_one_or_none() is not None:
                print(f"  Question {index + 1} already exists, skipping.")
                continue

            question = QuizQuestion(question_text=q["question_text"], order_index=index, active=True)
            for o_index, (text, weights) in enumerate(q["options"]):
                question.options.append(
                    QuizOption(
                        option_text=text,
                        order_index=o_index,
                        role_weights=QuizService.validate_role_weights(weights),
                    )
                )
            session.add(question)
            print(f"  Seeded question {index + 1}: {q['question_text']}")
        await session.commit()
    print("Done seeding quiz questions.")


if __name__ == "__main__":
    asyncio.run(seed())
