from dataclasses import dataclass


@dataclass(frozen=True)
class PromptSpec:
    note_type: str
    system_prompt: str
    user_template: str

    def render(self, transcript):
        return self.user_template.format(transcript=transcript)


SOAP_SYSTEM_PROMPT = (
    "You are a clinical documentation assistant. From a transcribed dictation "
    "you produce a structured SOAP note (Subjective, Objective, Assessment, Plan). "
    "Use only information stated or clearly paraphrased in the transcript. "
    "Write 'Not documented' for any section the transcript does not cover."
)

SUMMARY_SYSTEM_PROMPT = (
    "You write short, plain-language visit summaries for patients. "
    "Use only information stated in the transcript and avoid clinical jargon."
)

PROMPTS = {
    'soap': PromptSpec(
        note_type='soap',
        system_prompt=SOAP_SYSTEM_PROMPT,
        user_template=(
            "Based on the following transcript, write a complete SOAP note.\n\n"
            "TRANSCRIPT:\n{transcript}"
        ),
    ),
    'summary': PromptSpec(
        note_type='summary',
        system_prompt=SUMMARY_SYSTEM_PROMPT,
        user_template=(
            "Summarize the following transcript for the patient.\n\n"
            "TRANSCRIPT:\n{transcript}"
        ),
    ),
}


def get_prompt_spec(note_type):
    try:
        return PROMPTS[note_type]
    except KeyError:
        raise ValueError(f"Unknown note type '{note_type}'. Expected one of: {', '.join(sorted(PROMPTS))}")
