"""Example: using Scout's search engine from code.

Run with: python scout_examples/example_usage.py
"""
from scout import ExtensionFilter, Matcher, collect, report

def main():
    matcher = Matcher('TODO', ignore_case=True)
    results = collect('.', matcher, ExtensionFilter.parse('py,md'))
    report(results.sorted())

if __name__ == '__main__':
    main()
