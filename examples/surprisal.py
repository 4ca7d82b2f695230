from pangoling import causal_words_pred, masked_full_distribution, masked_target_log_prob

words = ["The", "apple", "doesn't", "fall", "far", "from", "the", "tree."]
sentence_ids = [1] * len(words)

# surprisal in bits; the first word of the sentence has no context
lps = causal_words_pred(words, by=sentence_ids, model="gpt2", log_base=2)
print([None if lp is None else -lp for lp in lps])

# the most probable fillers of the blank
for row in masked_full_distribution(
    "The apple doesn't fall far from the [MASK].", model="bert-base-uncased", top_k=3
):
    print(row.mask_index, row.rank, row.token, round(row.log_prob, 2))

'''
1 1 tree ...
'''

# "apple" is more predictable than "pear" in this context
print(
    masked_target_log_prob(
        ["The", "The"],
        ["apple", "pear"],
        ["doesn't fall far from the tree.", "doesn't fall far from the tree."],
        model="bert-base-uncased",
    )
)

'''
[-4.68..., -8.60...]
'''
