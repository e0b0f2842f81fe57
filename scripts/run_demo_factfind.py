"""
Automated demo fact-find for an employed, married homeowner with two
dependants (smoker, no other life cover).

Runs the whole questionnaire through the Flask API, then downloads the
PDF so you can inspect the result.

Usage:
    python3 web_app.py                      # in one terminal
    python3 scripts/run_demo_factfind.py    # in another

The PDF is written to ./fact-find-<session>.pdf
"""

import sys

import requests

BASE = "http://localhost:5001"
TOKEN = "demo.client@example.com"
HEADERS = {"Authorization": f"Bearer {TOKEN}"}

# ── Answers keyed by a phrase from the question text ──
ANSWERS = {
    "uk domiciled": "Yes",
    "marital status": "Married",
    "relationship to the other applicant": "Spouse",
    "any dependents": "Yes",
    "how many dependents": "2",
    "how old are your dependents": "6, 9",
    "occupation": "Project manager",
    "employment status": "Employed",
    "do you smoke": "Yes",
    "height": "5ft 10in",
    "weight": "12st 4lb",
    "gross annual income": "52,000",
    "mortgage costs": "1,150",
    "household bills": "320",
    "national insurance number": "QQ 12 34 56 C",
    "other life insurances": "No",
    "remaining term on your mortgage": "22 years",
    "outstanding balance on your mortgage": "185,000",
}

# Used when no phrase matches, per question type
DEFAULTS = {
    "text": "Not applicable",
    "number": "0",
    "date": "2000-01-01",
}


def pick_answer(question):
    text = question["text"].lower()
    for phrase, answer in ANSWERS.items():
        if phrase in text:
            if question["type"] in ("multiple-choice", "yes/no", "checkbox-multiple") \
                    and answer not in question.get("options", []):
                break
            return answer
    if question["type"] in ("multiple-choice", "yes/no"):
        options = question.get("options") or ["No"]
        return "No" if "No" in options else options[0]
    if question["type"] == "checkbox-multiple":
        return [question["options"][0]]
    return DEFAULTS.get(question["type"], "Not applicable")


def main():
    print("\n  Starting automated demo fact-find...")
    print(f"  Server: {BASE}\n")

    # 1. Register and open a session
    try:
        r = requests.post(f"{BASE}/api/users", headers=HEADERS, json={}, timeout=10)
        r.raise_for_status()
    except requests.ConnectionError:
        print("  Could not connect to server. Start it first:")
        print("    python3 web_app.py\n")
        sys.exit(1)

    r = requests.post(f"{BASE}/api/sessions", headers=HEADERS, json={}, timeout=10)
    r.raise_for_status()
    session_id = r.json()["id"]
    print(f"  Session: {session_id}\n")

    # 2. Answer until complete
    r = requests.post(f"{BASE}/api/sessions/{session_id}/questionnaire/start", headers=HEADERS, timeout=10)
    r.raise_for_status()
    state = r.json()
    count = 0

    while state["state"] != "complete":
        question = state["question"]
        answer = pick_answer(question)
        print(f"  [{question.get('category') or '-':<18}] {question['text']}")
        print(f"    A: {answer}")

        r = requests.post(f"{BASE}/api/sessions/{session_id}/questionnaire/submit",
                          headers=HEADERS, json={"value": answer}, timeout=10)
        if r.status_code != 200:
            print(f"  Answer rejected: {r.json().get('error')}")
            sys.exit(1)
        result = r.json()
        if result.get("ruleApplied"):
            print(f"    -> {result['ruleApplied']}")
        state = result["questionnaire"]
        count += 1

    print(f"\n  Fact-find complete! {count} questions answered.\n")

    # 3. Download the PDF
    r = requests.post(f"{BASE}/api/sessions/{session_id}/pdf", headers=HEADERS, timeout=60)
    r.raise_for_status()
    filename = f"fact-find-{session_id}.pdf"
    with open(filename, "wb") as f:
        f.write(r.content)

    print(f"  PDF saved to {filename} (email: {r.headers.get('X-Fact-Find-Email')})\n")


if __name__ == "__main__":
    main()
