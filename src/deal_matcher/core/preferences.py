"""Split free-text preferences into exclusions and inclusions."""

from typing import Callable, Iterable

from deal_matcher.core.entities import CompiledPreferences, Polarity, Preference

EXCLUSION_TOKEN = "no "

PolarityClassifier = Callable[[str], Preference]


def classify_preference(text: str) -> Preference:
    """Derive polarity from a leading "no " token.

    "No shellfish" becomes an exclusion of "shellfish"; anything else is an
    inclusion kept verbatim. Foods whose name starts with "no " are
    misclassified as exclusions.
    """
    stripped = text.strip()
    if stripped.lower().startswith(EXCLUSION_TOKEN):
        return Preference(
            text=text,
            polarity=Polarity.EXCLUDE,
            term=stripped[len(EXCLUSION_TOKEN):].strip(),
        )
    return Preference(text=text, polarity=Polarity.INCLUDE, term=text)


def compile_preferences(
    texts: Iterable[str],
    classifier: PolarityClassifier = classify_preference,
) -> CompiledPreferences:
    """Compile raw preference strings for one user."""
    compiled = CompiledPreferences()

    for text in texts:
        if not text or not text.strip():
            continue

        preference = classifier(text)
        if not preference.term.strip():
            continue

        if preference.polarity is Polarity.EXCLUDE:
            compiled.exclusions.append(preference.term)
        else:
            compiled.inclusions.append(preference.term)

    return compiled
